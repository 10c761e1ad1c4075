"""Ports and application state shared by the task engine and its front-ends."""
