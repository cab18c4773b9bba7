"""Registration and weekly report lifecycles."""
