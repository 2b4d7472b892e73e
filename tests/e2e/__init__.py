"""
End-to-end tests that run the ptywatch command as a user would: real
terminal-less pipes, a real watched directory and real signals.
"""
