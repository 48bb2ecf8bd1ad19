"""Pipeline jobs launched by the Process Supervisor."""
