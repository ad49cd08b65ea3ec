"""
Database setup script.
Enables PostGIS and creates tables if they don't exist.
"""
from app.main import create_tables

if __name__ == "__main__":
    print("Creating database tables...")
    create_tables()
    print("✅ Database tables created successfully!")
