"""CodeHub: identity core of a project hosting and code review platform.

The user record, how it becomes an authentication principal, and the
per-user saved queries and watches that issue, build, pull request,
commit and code comment search hang off of it.
"""

__version__ = "0.1.0"
