"""Foundation layer: errors and configuration shared by every other module."""
