"""
repositories/ - Data Access Layer
==================================
Each repository encapsulates all SQL queries for a specific domain entity.
Repositories receive the process connection pool, run their statements
through `db.execute` / `db.run_transaction` and return domain model objects.
"""
