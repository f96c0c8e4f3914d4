"""Weekly outing planner job service."""
