# recruzy/web/forms.py

from flask_wtf import FlaskForm
from wtforms import BooleanField, PasswordField, StringField
from wtforms.validators import DataRequired, Email, EqualTo, Length, Regexp


class LoginForm(FlaskForm):
    """
    Форма входа. Поле `login` принимает email или имя пользователя.
    """

    login: StringField = StringField(
        "Email или имя пользователя",
        validators=[
            DataRequired(message="Логин не может быть пустым."),
            Length(max=120),
        ],
        render_kw={"autocomplete": "username"},
    )

    password: PasswordField = PasswordField(
        "Пароль",
        validators=[DataRequired(message="Пароль не может быть пустым.")],
        render_kw={"autocomplete": "current-password"},
    )

    remember_me: BooleanField = BooleanField("Запомнить меня")


class RegistrationForm(FlaskForm):
    username: StringField = StringField(
        "Имя пользователя",
        validators=[
            DataRequired(message="Имя пользователя не может быть пустым."),
            Length(min=3, max=80),
            Regexp(
                r"^[A-Za-z0-9_.-]+$",
                message="Допустимы латинские буквы, цифры и символы _ . -",
            ),
        ],
    )

    email: StringField = StringField(
        "Email",
        validators=[
            DataRequired(message="Email не может быть пустым."),
            Email(message="Введите корректный email адрес."),
            Length(max=120),
        ],
    )

    password: PasswordField = PasswordField(
        "Пароль",
        validators=[
            DataRequired(message="Пароль не может быть пустым."),
            Length(min=8, message="Пароль должен быть не менее 8 символов."),
        ],
    )

    confirm_password: PasswordField = PasswordField(
        "Подтверждение пароля",
        validators=[EqualTo("password", message="Пароли не совпадают.")],
    )
