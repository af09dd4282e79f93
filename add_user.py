from apolo.database import SessionLocal, create_tables
from apolo.models import Profile
from apolo.routers.auth import get_password_hash

# Create tables if not exist
create_tables()

# Create a session
db = SessionLocal()

# Check if user already exists
existing_user = db.query(Profile).filter(Profile.email == "test@example.com").first()
if existing_user:
    print("User already exists")
else:
    # Create a test user
    email = "test@example.com"
    password = "password"
    profile = Profile(email=email, full_name="Test User", hashed_password=get_password_hash(password))
    db.add(profile)
    db.commit()
    print("Test user created: test@example.com / password")

db.close()
