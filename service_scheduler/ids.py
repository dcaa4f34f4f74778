"""Identifier types for the two identity keyspaces.

An ``AuthIdentityId`` is the subject issued by the external auth provider. An
``EmployeeId`` is the primary key of ``employees``. Both are strings on the
wire and in the database, so only the type checker keeps them apart; staffing
code accepts ``EmployeeId`` exclusively and the only way to obtain one from an
auth subject is ``identity.resolve_employee_id``.
"""

import uuid
from typing import NewType

AuthIdentityId = NewType("AuthIdentityId", str)
EmployeeId = NewType("EmployeeId", str)


def new_employee_id() -> EmployeeId:
    return EmployeeId(str(uuid.uuid4()))
