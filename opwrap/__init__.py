"""
opwrap - run CLI tools with 1Password credentials scoped to one process.

    opwrap run git push origin main
    opwrap run aws s3 ls
"""

__version__ = "0.1.0"
