from marshmallow import EXCLUDE, Schema, fields


class _BodySchema(Schema):
    class Meta:
        unknown = EXCLUDE


class SignupSchema(_BodySchema):
    email = fields.Str(allow_none=True)
    password = fields.Str(allow_none=True)
    name = fields.Str(allow_none=True)
    phone = fields.Str(allow_none=True)
    company_name = fields.Str(allow_none=True)


class SigninSchema(_BodySchema):
    email = fields.Str(allow_none=True)
    password = fields.Str(allow_none=True)


class ProfileUpdateSchema(_BodySchema):
    name = fields.Str(allow_none=True)
    phone = fields.Str(allow_none=True)
    company_name = fields.Str(allow_none=True)


class RefreshSchema(_BodySchema):
    refresh_token = fields.Str(allow_none=True)


class EmailSchema(_BodySchema):
    email = fields.Str(allow_none=True)


class UpdatePasswordSchema(_BodySchema):
    new_password = fields.Str(allow_none=True)
    current_password = fields.Str(allow_none=True)


class GoogleStartSchema(_BodySchema):
    redirect_to = fields.Str(allow_none=True)


class GoogleTokensSchema(_BodySchema):
    access_token = fields.Str(allow_none=True)
    refresh_token = fields.Str(allow_none=True)
