# -*- coding: utf-8 -*-
"""Location: ./mcplink/services/__init__.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

Service layer: sessions, connection testing, gateway aggregation.
"""
