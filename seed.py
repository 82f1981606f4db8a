from washgate import create_app, db
from washgate.models import User, Machine
from washgate.models.status import AccountStatus, Role
from werkzeug.security import generate_password_hash

app = create_app()

with app.app_context():
    db.create_all()

    # Create Admin
    if not User.query.filter_by(username='admin').first():
        admin = User(
            username='admin',
            email='admin@hostel.local',
            password_hash=generate_password_hash('password', method='pbkdf2:sha256'),
            role=Role.ADMIN.value,
            account_status=AccountStatus.ACTIVE.value,
        )
        db.session.add(admin)
        print("Admin created (admin/password)")

    # Create Machines
    machines_data = [
        {"code": "W1", "name": "Washer 1", "location": "Block A, Ground Floor", "relay_pin": 5},
        {"code": "W2", "name": "Washer 2", "location": "Block A, Ground Floor", "relay_pin": 18},
        {"code": "W3", "name": "Washer 3", "location": "Block B, First Floor", "relay_pin": 19},
    ]

    for m_data in machines_data:
        if not Machine.query.filter_by(code=m_data['code']).first():
            machine = Machine(**m_data)
            db.session.add(machine)
            print(f"Machine {machine.code} created.")

    db.session.commit()
    print("Database seeded successfully.")
