# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""App Store signed data verifier and Server API client."""

__version__ = "1.0.0"
