"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
Environment variables are set here before anything imports
``admission.core.config`` so settings are built for the test run.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"

os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("APP_TASK_API_KEY_REQUIRED", "true")
os.environ.setdefault("APP_TASK_API_KEYS", "test-task-key-123,test-task-key-456")
os.environ.setdefault("APP_RATE_LIMIT_ENABLED", "true")
