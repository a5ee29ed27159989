# -*- coding: utf-8 -*-
# SPDX-License-Identifier: MIT
""" Notification listener running plugins on build farm events. """
