# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Release subsystem for shipwright.

Packages one payload for every supported platform, writes the checksum
manifest, publishes GitHub and GitLab releases, builds the multi-platform
container image and cleans up the distribution directory. Each step is
usable on its own; pipeline.py wires them together for the CLI.
"""
