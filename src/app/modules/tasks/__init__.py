"""
Tasks Module

Task management for school staff, including repeating tasks:
1. Task CRUD with partial updates
2. Repeating series driven by a Custom repeat rule (every N days, weeks,
   months or years, optionally ending after a count or on a date)
3. One armed timer per series; on firing, the next occurrence is created and
   the current one is retired in a single transaction
4. Startup scan that re-arms every pending series from the database

API Endpoints:
- GET /tasks - List tasks
- GET /tasks/{id} - Get a task
- POST /tasks - Create a task
- PUT /tasks/{id} - Update a task
- DELETE /tasks/{id} - Delete a task
- DELETE /tasks/series/{id} - Delete a whole series
"""

from .jobs import RecurringTaskScheduler
from .repository import TaskStore
from .router import router

__all__ = ["router", "RecurringTaskScheduler", "TaskStore"]
