"""
Job Scheduler Test Suite.

- State transition tests
- Persistence invariant tests
- Queue and validation tests
- Retry and recovery tests
- Dispatcher tests (slots, attempts, timeouts, distribution)
- End-to-end scenarios through the SchedulerService
"""
