"""sciencelab package initializer.

The FastAPI application lives in ``sciencelab.main``; importing the package
itself stays cheap so tests and scripts can reach the pure progression code
without configuring Supabase."""
