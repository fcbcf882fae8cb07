"""Declarative concurrent task runner.

Tasks declared in a YAML file run concurrently, each one after the tasks it
names in ``after``; failures skip everything downstream of them.
"""

__version__ = "0.1.0"
