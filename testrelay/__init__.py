"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of TestRelay, licensed under the MIT License.
See LICENSE file for details.
"""

"""
TestRelay - test data relay
A CLI tool for moving test cases, runs and results between test-management services
"""

__version__ = "0.1.0"
