from marshmallow import EXCLUDE, Schema, ValidationError, fields, pre_load, validate

PASSWORD_LENGTH = validate.Length(min=8, max=128, error="Password must be between 8 and 128 characters long.")


def utf8_encodable(value):
    """Reject lone surrogates, which can never be hashed or stored."""
    try:
        value.encode("utf-8")
    except UnicodeEncodeError:
        raise ValidationError("Must be valid UTF-8 text.")


def _norm_email(v):
    return v.strip().lower() if isinstance(v, str) else v


class _EmailNormalizingSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    @pre_load
    def normalize(self, data, **kwargs):
        if isinstance(data, dict) and "email" in data:
            data = dict(data)
            data["email"] = _norm_email(data["email"])
        return data


class UserCreateSchema(_EmailNormalizingSchema):
    name = fields.String(required=True, validate=[validate.Length(min=1, max=100), utf8_encodable])
    email = fields.Email(required=True)
    password = fields.String(required=True, load_only=True, validate=[PASSWORD_LENGTH, utf8_encodable])


class UserLoginSchema(_EmailNormalizingSchema):
    email = fields.Email(required=True)
    password = fields.String(required=True, load_only=True, validate=validate.Length(min=1, max=128))


class UserOutSchema(Schema):
    id = fields.String(allow_none=False)
    name = fields.String(allow_none=True)
    email = fields.String(allow_none=False)
    roles = fields.List(fields.String(allow_none=True))
    created_at = fields.DateTime(data_key="createdAt")

