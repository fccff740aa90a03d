from __future__ import annotations
import os

WORK_DIR = os.environ.get("GATECI_WORK_DIR", ".gateci/work")
WORKFLOW = os.environ.get("GATECI_WORKFLOW")  # optional workflow file for the HTTP surface
COMPARE_REF = os.environ.get("GATECI_COMPARE_REF", "origin/main")
POLL_INTERVAL = float(os.environ.get("GATECI_POLL_INTERVAL", "0.2"))
SHELL = ["bash", "--noprofile", "--norc", "-eo", "pipefail", "-c"]
OUTPUT_TAIL = int(os.environ.get("GATECI_OUTPUT_TAIL", "4000"))
REPOSITORY = os.environ.get("GATECI_REPOSITORY")  # clone source for events that don't name one
