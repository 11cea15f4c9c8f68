"""Watch-stream collectors that feed the resource cache."""
