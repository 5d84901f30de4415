"""Built-in CLI commands for spotauth.

* :mod:`~spotauth.commands.auth` -- ``login``, ``status``, ``refresh`` and
  ``logout``, registered directly on the root app.
* :mod:`~spotauth.commands.config` -- the ``config`` sub-group for viewing
  and changing persisted settings.
"""
