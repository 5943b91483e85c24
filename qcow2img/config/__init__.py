# SPDX-License-Identifier: LGPL-3.0-or-later
from .config_loader import Config

__all__ = ["Config"]
