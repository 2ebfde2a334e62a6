from flask import current_app
from flask_wtf import FlaskForm
from wtforms import IntegerField, StringField
from wtforms.validators import DataRequired, InputRequired, ValidationError


def text_within_size_limit(form, field):
    if not isinstance(field.data, str):
        raise ValidationError("Secret must be text.")
    limit = current_app.config["DATA_SIZE_LIMIT"]
    if len(field.data.encode("utf-8")) > limit:
        raise ValidationError(f"Secret must be at most {limit} bytes.")


class JsonIntegerField(IntegerField):
    """IntegerField that only takes whole numbers or digit strings from a JSON body."""

    def process_formdata(self, valuelist):
        if valuelist:
            value = valuelist[0]
            if value is None or isinstance(value, bool) or (
                isinstance(value, float) and not value.is_integer()
            ):
                self.data = None
                raise ValueError(self.gettext("Not a valid integer value."))
        super().process_formdata(valuelist)


def within_config_range(config_key: str):
    def _check(form, field):
        upper = current_app.config[config_key]
        if field.data is None or not 1 <= field.data <= upper:
            raise ValidationError(f"Must be between 1 and {upper}.")

    return _check


class CreateSecretForm(FlaskForm):
    """JSON body of POST /create-secret. CSRF is off: the endpoint takes no cookies."""

    class Meta:
        csrf = False

    secret_text = StringField(
        "Secret text",
        name="data",
        validators=[DataRequired(message="Secret cannot be empty"), text_within_size_limit],
    )
    max_views = JsonIntegerField(
        "Max views",
        name="maxViews",
        validators=[InputRequired(), within_config_range("MAX_VIEWS")],
    )
    time_limit = JsonIntegerField(
        "Time limit in days",
        name="timeLimit",
        validators=[InputRequired(), within_config_range("MAX_TTL_DAYS")],
    )
