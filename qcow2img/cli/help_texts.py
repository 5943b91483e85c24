# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# qcow2img/cli/help_texts.py
from __future__ import annotations

# NOTE:
# Pure help text used by the argparse epilog. Keep it copy/paste runnable.

YAML_EXAMPLE = r"""# qcow2img configuration (YAML)
#
# Run:
#   qcow2img --config convert.yaml
#
# Merge multiple configs (later overrides earlier):
#   qcow2img --config base.yaml --config overrides.yaml disk.qcow2
#
# CLI flags always win over config values.

input: /var/lib/libvirt/images/disk.qcow2
output: /var/lib/libvirt/images/disk.img   # optional: file or existing folder; default is next to input
to: raw                                    # raw | qcow2
qemu_img: /usr/bin/qemu-img                # or env QCOW2IMG_QEMU_IMG
verbose: 1
log_file: ./qcow2img.log
json_logs: false
no_color: false
log_utc: false
"""
