"""HR Records: leave requests, approvals and balances."""
