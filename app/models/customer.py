"""
Customer and ServiceItem models.

Both are owned by the surrounding CRM/booking system; the ledger only reads
them to check tenant ownership and to price completed appointments.
"""
from datetime import datetime
from ..extensions import db


class Customer(db.Model):
    """
    A tenant's customer (lead). Every ledger operation re-checks that the
    customer it names belongs to the tenant it acts for.
    """
    __tablename__ = 'customers'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id'), nullable=False, index=True)

    name = db.Column(db.String(255))
    email = db.Column(db.String(255))
    phone = db.Column(db.String(50))
    status = db.Column(db.String(20), default='active')  # active, archived

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f'<Customer {self.id} tenant={self.tenant_id}>'

    def to_dict(self):
        return {
            'id': self.id,
            'tenant_id': self.tenant_id,
            'name': self.name,
            'email': self.email,
            'status': self.status,
        }


class ServiceItem(db.Model):
    """A bookable service; its price is the reference for appointment awards."""
    __tablename__ = 'service_items'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id'), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    price = db.Column(db.Numeric(12, 2))  # null = no price configured
    is_active = db.Column(db.Boolean, default=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f'<ServiceItem {self.name}>'
