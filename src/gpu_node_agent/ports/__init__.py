"""Port interfaces of the node agent."""
