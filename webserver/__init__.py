"""HTTP trigger for scheduled monitor runs."""
