"""Authentication blueprint backed by the Circular Nest API."""
from flask import Blueprint, current_app, flash, redirect, render_template, request, session, url_for
from flask_login import current_user, login_required, login_user, logout_user
from flask_wtf import FlaskForm
from wtforms import BooleanField, PasswordField, StringField, SubmitField, TextAreaField
from wtforms.validators import DataRequired, Email, EqualTo, Length, Optional, Regexp

from extensions import nest
from utils.api_client import APIError
from utils.auth_session import AuthError
from utils.security import is_safe_redirect_url

auth_bp = Blueprint("auth", __name__)


class SignupForm(FlaskForm):
    institution_name = StringField("Institution Name", validators=[DataRequired(), Length(max=200)])
    contact_person = StringField("Contact Person", validators=[DataRequired(), Length(max=150)])
    email = StringField("Email", validators=[DataRequired(), Email(), Length(max=255)])
    phone = StringField("Phone", validators=[Optional(), Regexp(r"^[0-9+\-\s]{7,20}$", message="Enter a valid phone number.")])
    address = TextAreaField("Address", validators=[Optional(), Length(max=500)])
    city = StringField("City", validators=[Optional(), Length(max=100)])
    state = StringField("State", validators=[Optional(), Length(max=100)])
    pincode = StringField("Pincode", validators=[Optional(), Regexp(r"^[0-9]{6}$", message="Pincode must be 6 digits.")])
    password = PasswordField("Password", validators=[DataRequired(), Length(min=6)])
    confirm_password = PasswordField(
        "Confirm Password", validators=[DataRequired(), EqualTo("password", message="Passwords must match.")]
    )
    submit = SubmitField("Create Account")


class LoginForm(FlaskForm):
    email = StringField("Email", validators=[DataRequired(), Email(), Length(max=255)])
    password = PasswordField("Password", validators=[DataRequired()])
    remember_me = BooleanField("Remember me")
    submit = SubmitField("Sign In")


@auth_bp.route("/signup", methods=["GET", "POST"])
def signup():
    if current_user.is_authenticated:
        return redirect(url_for("main.dashboard"))

    form = SignupForm()
    if form.validate_on_submit():
        try:
            nest.auth.signup(
                form.email.data,
                form.password.data,
                role="user",
                institution_name=form.institution_name.data.strip(),
                contact_person=form.contact_person.data.strip(),
                phone=(form.phone.data or "").strip() or None,
                address=(form.address.data or "").strip() or None,
                city=(form.city.data or "").strip() or None,
                state=(form.state.data or "").strip() or None,
                pincode=(form.pincode.data or "").strip() or None,
            )
        except (AuthError, APIError) as exc:
            flash(str(exc), "danger")
            return render_template("auth/signup.html", form=form, page_title="Register Institution")

        flash("Registration successful. Please sign in.", "success")
        return redirect(url_for("auth.login"))

    return render_template("auth/signup.html", form=form, page_title="Register Institution")


@auth_bp.route("/login", methods=["GET", "POST"])
def login():
    if current_user.is_authenticated:
        return redirect(url_for("main.dashboard"))

    form = LoginForm()
    if form.validate_on_submit():
        try:
            user = nest.auth.login(form.email.data, form.password.data)
        except (AuthError, APIError) as exc:
            current_app.logger.info("login_failed", extra={"ip_address": request.remote_addr})
            flash(str(exc) or "Invalid credentials provided.", "danger")
            return render_template("auth/login.html", form=form, page_title="Login"), 401

        # A visitor's cached views and preview handle do not carry over to the account.
        nest.forget_owner()
        login_user(user, remember=bool(form.remember_me.data))
        session.permanent = bool(form.remember_me.data)

        next_page = request.args.get("next")
        if next_page and is_safe_redirect_url(next_page):
            return redirect(next_page)
        return redirect(url_for("main.dashboard"))

    return render_template("auth/login.html", form=form, page_title="Login")


@auth_bp.route("/logout", methods=["GET", "POST"])
@login_required
def logout():
    nest.forget_owner()
    nest.auth.logout()
    logout_user()
    flash("You have been logged out.", "success")
    return redirect(url_for("auth.login"))
