# SPDX-License-Identifier: Apache-2.0

"""
Middleware package for error translation.

This package maps the core's exception taxonomy onto problem-details
responses for whatever routing layer hosts the relief coordination core.
"""
