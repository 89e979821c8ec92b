from decimal import Decimal

from flashstore import crud, models
from flashstore.auth import verify_password
from flashstore.seed import seed


def test_seed_loads_sample_data_once(database):
    assert seed(database) == {"users": 3, "games": 6, "flashdisks": 6}
    # running again adds nothing
    assert seed(database) == {"users": 0, "games": 0, "flashdisks": 0}

    db = database.session()
    try:
        admin = crud.get_user_by_username(db, "admin")
        assert admin.role == "admin"
        assert verify_password("admin123", admin.password_hash)

        smallest = db.query(models.Flashdisk).order_by(models.Flashdisk.capacity_gb).first()
        assert smallest.real_capacity_gb == Decimal("7.40")
        assert db.query(models.Game).count() == 6
    finally:
        db.close()
