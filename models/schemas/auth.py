from marshmallow import EXCLUDE, Schema, fields, validate

from models.schemas.user import PASSWORD_LENGTH, _EmailNormalizingSchema, utf8_encodable


class RefreshRequestSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    refresh_token = fields.String(
        required=True,
        data_key="refreshToken",
        validate=validate.Length(min=1, max=512, error="refreshToken is required."),
    )


class LogoutRequestSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    refresh_token = fields.String(load_default=None, allow_none=True, data_key="refreshToken")


class ForgotPasswordSchema(_EmailNormalizingSchema):
    email = fields.Email(required=True)


class ResetPasswordSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    token = fields.String(required=True, validate=validate.Length(min=1, max=512, error="token is required."))
    new_password = fields.String(required=True, load_only=True, data_key="newPassword", validate=[PASSWORD_LENGTH, utf8_encodable])
