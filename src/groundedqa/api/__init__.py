"""HTTP interface for groundedqa."""
