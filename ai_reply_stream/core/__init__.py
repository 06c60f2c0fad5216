"""
Core modules for AI Reply Stream.

This package contains quota admission, generation orchestration,
prompt construction, cost metering and result persistence.
"""
