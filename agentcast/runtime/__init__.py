"""Runtime core of agentcast: process supervision, tool bridge, retry loop."""
