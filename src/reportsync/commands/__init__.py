"""Built-in CLI sub-commands for reportsync.

* :mod:`~reportsync.commands.accomplished` -- print an accomplished-items report.
* :mod:`~reportsync.commands.config` -- view and modify global settings.
* :mod:`~reportsync.commands.profile` -- add, list and remove connection profiles.

Multi-command groups export a :class:`typer.Typer` sub-application; single
commands export a plain callback registered on the root app.
"""
