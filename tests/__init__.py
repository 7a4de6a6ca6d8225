"""
Booking Engine Tests

Running Tests:
    # Install test extras first
    pip install -e ".[test]"

    # Run all tests
    pytest tests/ -v

    # Run one module
    pytest tests/unit/test_engine.py -v

Test Coverage:
    - Conflict detection and buffers
    - Resource matching and slot generation
    - Booking validation and industry rules
    - Lifecycle transitions and financial impact
    - Engine orchestration and concurrency
    - SQL persistence (SQLite via aiosqlite)
    - HTTP API
"""
