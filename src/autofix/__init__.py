"""Turn Slack requests into pull requests with preview deployments."""
