from rest_framework import status as http_status
from rest_framework.response import Response


def success(data=None, message='', status=http_status.HTTP_200_OK):
    return Response({'success': True, 'message': message, 'data': data}, status=status)


def error(message, errors=None, status=http_status.HTTP_400_BAD_REQUEST):
    return Response({'success': False, 'message': message, 'errors': errors}, status=status)
