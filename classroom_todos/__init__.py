"""
Classroom todo lists for teachers and their students.

Storage is pluggable: a local mock store, Google Sheets (API key or OAuth2)
or Supabase, chosen once at startup from configuration.
"""
