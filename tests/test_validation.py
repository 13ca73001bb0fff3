from datetime import date

import pytest

from app.models import CustomerInput
from app.validation import (
    CustomerValidator,
    is_valid_email,
    validate_page_parameters,
    years_before,
)

TODAY = date(2024, 6, 15)


def _input(**overrides):
    values = {"first_name": "Ada", "last_name": "Lovelace", "email": "ada@example.com"}
    values.update(overrides)
    return CustomerInput(**values)


@pytest.fixture
def validator():
    return CustomerValidator()


class TestRequiredFields:
    def test_valid_input(self, validator):
        assert validator.validate(_input(), TODAY).is_valid

    def test_blank_names_and_email(self, validator):
        result = validator.validate(_input(first_name=" ", last_name="", email=""), TODAY)

        assert result.messages == [
            "First name is required",
            "Last name is required",
            "Email is required",
        ]
        assert [f.field for f in result.failures] == ["first_name", "last_name", "email"]

    @pytest.mark.parametrize("email", ["plainaddress", "a@b", "a b@example.com", "@example.com"])
    def test_invalid_email_format(self, validator, email):
        result = validator.validate(_input(email=email), TODAY)
        assert result.messages == ["Email format is invalid"]

    @pytest.mark.parametrize("email", ["ada@example.com", "first.last+tag@sub.example.co.uk"])
    def test_valid_email(self, email):
        assert is_valid_email(email)


class TestDateOfBirth:
    @pytest.mark.parametrize("dob", [
        date(2006, 6, 15),   # ちょうど 18 歳
        date(1904, 6, 15),   # ちょうど 120 歳
        date(1980, 1, 1),
    ])
    def test_accepted(self, validator, dob):
        assert validator.validate(_input(date_of_birth=dob), TODAY).is_valid

    def test_one_day_short_of_eighteen(self, validator):
        result = validator.validate(_input(date_of_birth=date(2006, 6, 16)), TODAY)
        assert result.messages == ["Customer must be at least 18 years old"]

    def test_one_day_past_one_hundred_twenty(self, validator):
        result = validator.validate(_input(date_of_birth=date(1904, 6, 14)), TODAY)
        assert result.messages == ["Age cannot exceed 120 years"]

    def test_future_date(self, validator):
        result = validator.validate(_input(date_of_birth=date(2024, 6, 16)), TODAY)
        assert result.messages == ["Date of birth cannot be in the future"]

    def test_leap_day_birthday(self, validator):
        # 2/29 生まれは 2006-02-27 時点でまだ 18 歳になっていない
        assert not validator.validate(
            _input(date_of_birth=date(1988, 2, 29)), date(2006, 2, 27)
        ).is_valid
        assert validator.validate(
            _input(date_of_birth=date(1988, 2, 28)), date(2006, 2, 28)
        ).is_valid

    def test_years_before_on_leap_day(self):
        assert years_before(date(2024, 2, 29), 1) == date(2023, 2, 28)
        assert years_before(date(2024, 2, 29), 4) == date(2020, 2, 29)


class TestPageParameters:
    @pytest.mark.parametrize("number, size", [(1, 1), (1, 100), (7, 10)])
    def test_valid(self, number, size):
        assert validate_page_parameters(number, size).is_valid

    def test_page_number_zero(self):
        assert validate_page_parameters(0, 10).messages == ["Page number must be greater than 0"]

    @pytest.mark.parametrize("size", [0, 101])
    def test_page_size_out_of_range(self, size):
        assert validate_page_parameters(1, size).messages == ["Page size must be between 1 and 100"]
