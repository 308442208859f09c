# SPDX-License-Identifier: Apache-2.0

"""
Maintenance scripts: index creation and expired cache sweeps.
"""
