# -*- coding: utf-8 -*-
"""Location: ./mcplink/utils/__init__.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

Small shared helpers.
"""
