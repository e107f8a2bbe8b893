"""Portfolio stock price update job built on the shared batch engine."""
