from uuid import UUID
from fastapi import Depends, HTTPException, Path
from sqlalchemy.orm import Session

from database.base import get_db
from database.models import GifTemplate
from operators.template_operator import get_template


def require_template(
    template_id: UUID = Path(...),
    db: Session = Depends(get_db),
) -> GifTemplate:
    template = get_template(db, template_id)

    if not template:
        raise HTTPException(status_code=404, detail="Template not found")

    return template
