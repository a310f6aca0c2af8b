from rest_framework import serializers
from django.contrib.auth.password_validation import validate_password
from .models import User, AuditLog
from .permissions import VALID_ROLES, ROLE_READER, get_user_role, set_user_role


class UserSerializer(serializers.ModelSerializer):
    role = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = ['id', 'username', 'email', 'first_name', 'last_name', 'display_name',
                  'department', 'site', 'phone', 'role', 'is_active', 'created_at', 'updated_at']
        read_only_fields = ['username', 'created_at', 'updated_at']

    def get_role(self, obj):
        return get_user_role(obj)


class UserUpdateSerializer(serializers.ModelSerializer):
    """Admin update of a user profile, role included"""
    role = serializers.ChoiceField(choices=VALID_ROLES, required=False, write_only=True)

    class Meta:
        model = User
        fields = ['email', 'first_name', 'last_name', 'display_name', 'department',
                  'site', 'phone', 'is_active', 'role']

    def update(self, instance, validated_data):
        role = validated_data.pop('role', None)
        instance = super().update(instance, validated_data)
        if role:
            set_user_role(instance, role)
        return instance


class UserCreateSerializer(serializers.ModelSerializer):
    password = serializers.CharField(write_only=True, validators=[validate_password])
    password_confirm = serializers.CharField(write_only=True)
    role = serializers.ChoiceField(choices=VALID_ROLES, default=ROLE_READER, write_only=True)

    class Meta:
        model = User
        fields = ['username', 'email', 'password', 'password_confirm', 'first_name', 'last_name',
                  'display_name', 'department', 'site', 'phone', 'role']

    def validate(self, attrs):
        if attrs['password'] != attrs['password_confirm']:
            raise serializers.ValidationError({"password": "Les mots de passe ne correspondent pas."})
        return attrs

    def create(self, validated_data):
        validated_data.pop('password_confirm')
        password = validated_data.pop('password')
        role = validated_data.pop('role')
        user = User.objects.create(**validated_data, is_active=True)
        user.set_password(password)
        user.save()
        set_user_role(user, role)
        return user


class BulkUserEntrySerializer(serializers.Serializer):
    """One row of a bulk user import"""
    email = serializers.EmailField()
    display_name = serializers.CharField(max_length=200)
    department = serializers.CharField(max_length=100, required=False, allow_blank=True)
    site = serializers.CharField(max_length=100, required=False, allow_blank=True)
    phone = serializers.CharField(max_length=20, required=False, allow_blank=True)
    role = serializers.ChoiceField(choices=VALID_ROLES, default=ROLE_READER)
    password = serializers.CharField(min_length=6, required=False, allow_blank=True, write_only=True)

    def validate_display_name(self, value):
        if not value.strip():
            raise serializers.ValidationError("Le nom d'affichage est requis.")
        return value.strip()


class AuditLogSerializer(serializers.ModelSerializer):
    user = UserSerializer(read_only=True)

    class Meta:
        model = AuditLog
        fields = ['id', 'user', 'action', 'model_name', 'object_id', 'object_name',
                  'object_reference', 'serial_number', 'changes', 'ip_address', 'created_at']
