"""Job discovery, eligibility, execution, and the scheduler loop."""
